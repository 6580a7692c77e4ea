"""Voxline conversation pipeline - Transcribe -> Generate -> Synthesize per utterance.

Usage:
    from voxline.pipeline import ConversationHistory, ConversationPipeline

    pipeline = ConversationPipeline(
        session_id, transcriber, responder, synthesizer,
        ConversationHistory(max_turns=20), outbox=queue,
    )
    await pipeline.submit(segment, provider_config)
"""

from voxline.pipeline.history import ConversationHistory, Turn
from voxline.pipeline.orchestrator import ConversationPipeline, PipelineState
from voxline.pipeline.sentences import SentenceChunker, split_sentences

__all__ = [
    "ConversationPipeline",
    "PipelineState",
    "ConversationHistory",
    "Turn",
    "SentenceChunker",
    "split_sentences",
]
