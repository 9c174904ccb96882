"""Analysis module — post-execution handling of results.

- normalizer.py: JSON-safe coercion of raw results
- chart_recommender.py: display-type heuristics, pivoting and caps
- orchestrator.py: the generate → validate → execute → summarize pipeline
"""
