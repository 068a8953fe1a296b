"""webview-dev: run the Android WebView shell against a local dev server.

The pipeline prepares the host (JDK, SDK command-line tools, packages), boots
an emulator from a device profile, waits for the dev server, installs and
launches the debug APK, then wires Chrome DevTools to the in-app WebView.
"""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "config",
    "devices",
    "devserver",
    "errors",
    "pipeline",
    "runtime",
]
