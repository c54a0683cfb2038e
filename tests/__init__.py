"""
Screen Solver - Unit Tests Package

Test Coverage:
- Configuration loading
- Capture driver (overlay hide/show around the capture)
- Inference client request building
- Session state and the hotkey dispatcher state machine
- Overlay window and hotkey polling

Run tests with:
    pytest -v --cov=screen_solver
"""
