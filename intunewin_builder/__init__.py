"""Build Intune Win32 packages from Autodesk deployments."""

__version__ = "0.1.0"
