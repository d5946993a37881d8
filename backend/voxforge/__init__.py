"""VoxForge API: subscription billing, admin settings and ElevenLabs media generation."""
