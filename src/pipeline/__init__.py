"""Credit-metered video analysis pipeline.

This package ties the credit ledger, transcript acquisition and the staged
LLM runner together into request workflows that stream their results and
refund the user when a request fails.
"""
