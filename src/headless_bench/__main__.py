"""Allow ``python -m headless_bench``."""

from headless_bench.cli import main

main()
