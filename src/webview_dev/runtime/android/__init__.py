"""Android SDK, AVD and device helpers."""
