"""
DuoCast Services

Services for the two-stage generation pipeline:
- scene_composition: Two portraits into one scene image
- video_generation: Scene image into a talking video
- credits: Crash-safe credit ledger
- orchestrator: Pipeline sequencing, job registry and HTTP server
- streaming: SSE progress streaming
- media / prompting: Image helpers and prompt templates
"""
