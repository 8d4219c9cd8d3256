# ==== BUSINESS LOGIC PACKAGE ==== #

"""
Business logic package for licensing domain rules.

This package contains the license type, status, priority and decision
enumerations together with the workflow transition table, SLA windows and
stage numbering used by the workflow engine.
"""
