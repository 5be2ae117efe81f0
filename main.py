#!/usr/bin/env python3
"""
spawnsmith - turn one sentence into a generated project.

Thin launcher so the CLI also runs from a source checkout: ``python main.py run "..."``.
"""
import sys

from spawnsmith.cli import main


if __name__ == '__main__':
    sys.exit(main())
