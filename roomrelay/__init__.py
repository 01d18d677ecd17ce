"""Signaling relay and room presence for peer-to-peer voice chat rooms"""
