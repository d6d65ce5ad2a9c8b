"""devicehub - hotplug-aware device selection and setup for desktop launchers."""

__version__ = "0.1.0"
