"""
Regulation analyzer core package.

This package turns nested regulatory title XML into flat, queryable
structure records. It exposes a bounded-concurrency task runner, a
structural parser with its parent linkage pass, and the batch drivers,
storage helpers and repositories that persist the parsed structure.
"""
