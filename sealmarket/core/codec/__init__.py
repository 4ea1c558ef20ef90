"""Sealed choice encoding"""
from sealmarket.core.codec.choice_codec import ChoiceCodec, DecodedChoice

__all__ = ["ChoiceCodec", "DecodedChoice"]
