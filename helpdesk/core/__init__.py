"""Core configuration and exceptions"""
