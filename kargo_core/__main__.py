"""Run the kargo-core command line tool with `python -m kargo_core`."""

from kargo_core.tool.kargo_core import main

if __name__ == "__main__":
    main()
