"""
Job-processing services: credential vault, synthesis client, retry policy, store, worker.
"""
