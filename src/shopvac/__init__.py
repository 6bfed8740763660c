"""
shopvac - Kubernetes pod garbage collector

Removes pods matching label/field selectors once they are older than a
threshold, either as a one-shot CLI or as a controller driven by PodCleaner
custom resources.
"""

__version__ = "0.1.0"
__author__ = "shopvac maintainers"
