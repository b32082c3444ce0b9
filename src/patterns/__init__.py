"""Pattern mining over the rolling alert window.

Modules
───────
  detector — frequent / sequential / correlation miners + PatternDetector
"""
