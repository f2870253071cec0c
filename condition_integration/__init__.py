"""Helpers for the multi-condition integration and metabolomics labs"""
