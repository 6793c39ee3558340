#!/usr/bin/env python3
"""
Example configuration file for Chess UCI Driver.

This file demonstrates how to configure engine sessions, clocks and games,
either directly through Config or through environment variables.

Copy this file to config.py and modify as needed.
"""

import os
from chess_uci_driver.core.clock import TimeControl
from chess_uci_driver.core.models import Config
from chess_uci_driver.logs import setup_logging

# =============================================================================
# Library Locations
# =============================================================================

# Directory scanned recursively for UCI engine executables
ENGINES_DIR = os.getenv("UCI_ENGINES_DIR", "engines")

# Directory scanned recursively for Polyglot (.bin) opening books
BOOKS_DIR = os.getenv("UCI_BOOKS_DIR", "books")

# =============================================================================
# Engine Option Overrides
# =============================================================================

# Applied with setoption after the handshake, keyed by the engine's id name.
# A value of None sends the option without a value (button options).
ENGINE_OPTIONS = {
    "Stockfish 16": {
        "Threads": "2",
        "Hash": "128",
        "Clear Hash": None,
    },
}

# =============================================================================
# Session Configurations
# =============================================================================

# Default settings
DEFAULT_CONFIG = Config(
    engines_dir=ENGINES_DIR,
    books_dir=BOOKS_DIR,
    engine_options=ENGINE_OPTIONS,
)

# Slow machines or engines that load large networks at startup
PATIENT_CONFIG = Config(
    start_timeout=10.0,
    command_timeout=30.0,
    shutdown_timeout=5.0,
    engines_dir=ENGINES_DIR,
    books_dir=BOOKS_DIR,
)

# Only accept engines that print something before the first command,
# and always play the main line of the book
STRICT_CONFIG = Config(
    require_startup_output=True,
    book_strict=True,
    engines_dir=ENGINES_DIR,
    books_dir=BOOKS_DIR,
)

# =============================================================================
# Time Control Presets
# =============================================================================

TIME_CONTROLS = {
    "bullet": [TimeControl.from_minutes(1)],
    "blitz": [TimeControl.from_minutes(3, increment_seconds=2)],
    "rapid": [TimeControl.from_minutes(15, increment_seconds=10)],
    # 40 moves in 90 minutes, then 30 minutes with a 30 second increment
    "classical": [
        TimeControl.from_minutes(90, moves=40),
        TimeControl.from_minutes(30, increment_seconds=30),
    ],
    # 5 second delay on every move
    "delay": [TimeControl.from_minutes(5, delay_seconds=5)],
}

# =============================================================================
# Usage Examples
# =============================================================================

if __name__ == "__main__":
    print("Chess UCI Driver - Configuration Examples")
    print("=" * 50)

    config = Config.from_env()
    setup_logging(config=config)
    print(f"Engines directory: {config.engines_dir or 'not set'}")
    print(f"Books directory: {config.books_dir or 'not set'}")
    print(f"Command timeout: {config.command_timeout}s")
    print(f"Log level: {config.log_level}")

    print("\nAvailable configurations:")
    print("- DEFAULT_CONFIG: Library locations and option overrides")
    print("- PATIENT_CONFIG: Generous timeouts for slow engines")
    print("- STRICT_CONFIG: Startup output required, main-line book moves")

    print("\nAvailable time controls:")
    for name, stages in TIME_CONTROLS.items():
        print(f"- {name}: {len(stages)} stage(s)")

    print("\nTo use a configuration:")
    print("from config import DEFAULT_CONFIG, TIME_CONTROLS")
    print("await GameOrchestrator(DEFAULT_CONFIG).start_new_game(path, 'black', 0, time_controls=TIME_CONTROLS['blitz'])")
