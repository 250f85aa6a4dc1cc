"""
HTTP surface for Script Healer
"""
