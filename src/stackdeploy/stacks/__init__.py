"""Synthesized stacks: models, selection and output mapping."""

from stackdeploy.stacks.models import StackAnnotation, SynthesizedStack
from stackdeploy.stacks.outputs import OutputMap, get_construct_ids_for_outputs
from stackdeploy.stacks.resolver import resolve_stack
from stackdeploy.stacks.synth import CommandSynthesizer, Synthesizer, load_manifest

__all__ = [
    "CommandSynthesizer",
    "OutputMap",
    "StackAnnotation",
    "SynthesizedStack",
    "Synthesizer",
    "get_construct_ids_for_outputs",
    "load_manifest",
    "resolve_stack",
]
