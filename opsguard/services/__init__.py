"""
Console backend collaborators: identity source, step-up service and audit sink.
"""
