"""UPM - keeps Windows package managers up to date."""

__version__ = "0.3.0"
