"""Configuration for the regularization engine."""
