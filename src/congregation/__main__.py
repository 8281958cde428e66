"""congregation entry point.

Supports: python -m congregation
"""

from .app import main

if __name__ == "__main__":
    main()
