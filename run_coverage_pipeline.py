#!/usr/bin/env python3
"""Build, test, aggregate and publish Cargo coverage to Coveralls."""

from __future__ import annotations

from cargo_coverage_to_coveralls.pipeline import main

if __name__ == "__main__":
    raise SystemExit(main())
