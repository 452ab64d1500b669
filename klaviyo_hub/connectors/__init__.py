"""Marketing platform connectors"""
