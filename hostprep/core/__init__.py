"""Core — models, engine, persistence and provisioning services."""
