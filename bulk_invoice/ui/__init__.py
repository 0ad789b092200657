"""Streamlit review UI."""
