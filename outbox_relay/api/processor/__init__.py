"""
Processor API

HTTP trigger for the batch processor and the maintenance jobs.
"""
