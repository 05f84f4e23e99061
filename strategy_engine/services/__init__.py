"""
Services
Strategy Engine
"""
