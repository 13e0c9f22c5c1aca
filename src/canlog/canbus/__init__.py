"""
Frame model, log readers and ISO-TP reassembly
"""
