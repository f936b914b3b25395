from parley.context.assembler import ContextAssembler, ContextRequest, ContextSource

__all__ = ["ContextAssembler", "ContextRequest", "ContextSource"]
