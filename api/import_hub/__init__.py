"""
Import Hub - importations, landed cost allocation and weighted-average stock.
"""
