"""Make/Model regularization for SAAQ vehicle registration data."""
