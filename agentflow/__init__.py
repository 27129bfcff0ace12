"""
agentflow: compiles visual multi-agent workflow graphs into Python source.

    from agentflow.compiler import compile_graph
    from agentflow.compiler.deserialiser import json_to_graph

    graph, name = json_to_graph("support_bot.json")
    result = compile_graph(graph, module_name="support_bot")
"""

__version__ = "0.3.0"
