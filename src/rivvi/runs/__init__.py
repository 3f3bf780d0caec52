"""
Runs: batch executions of a campaign over an uploaded patient list.
"""
