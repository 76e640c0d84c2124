"""Core domain package for betchat.

Core contains the conversation and message stores and the realtime router
without any Supabase-specific code, keeping the sync logic portable.
"""
