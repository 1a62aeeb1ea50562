"""syster-cli: analyze SysML v2 / KerML models and bridge them to interchange formats."""

__version__ = "0.3.0"
