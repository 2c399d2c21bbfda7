"""
paulscrape: crawl the PAUL course catalog and publish one semester as JSON.
"""
