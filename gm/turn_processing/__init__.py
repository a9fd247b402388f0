"""Turn/command processing helpers.

This package centralizes validation + turn bookkeeping so every command,
whether it comes from the API or a background worker, flows through the same
rules and shows up consistently in server logs.
"""
