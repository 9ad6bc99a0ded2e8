"""
Test suite for the multi-file zipper.

Test Categories:
- Unit tests: collection, entry naming, progress and archive writers in isolation
- Task tests: the background archive task and its terminal outcomes
- Integration tests: the command-line front end end to end
"""
