"""Exploratory analysis of building electricity, metadata and weather tables."""
