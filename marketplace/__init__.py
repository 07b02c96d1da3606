"""Marketplace booking scheduling and policy engine"""
