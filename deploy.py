#!/usr/bin/env python3
"""XBoard-Distro deployment manager entry script."""

from xbdeploy.main import main

if __name__ == "__main__":
    main()
