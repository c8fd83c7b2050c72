"""Test package for the ABCD spatial sequence task.

Core modules are exercised with an injected fake clock so every timer,
debounce window and settle delay is stepped deterministically. The UI
smoke tests run headlessly using pygame's dummy video driver. To run
these tests, execute ``pytest`` from the project root.
"""
