"""Rule matching: condition trees and the automation registry.

Modules
───────
  conditions — condition kinds (tagged union) and their parser
  matcher    — RuleMatcher: register / update / delete / match automations
"""
