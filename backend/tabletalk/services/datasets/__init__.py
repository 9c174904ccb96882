"""Dataset module — CSV profiling and the dataset metadata registry."""
