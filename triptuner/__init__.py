"""
TripTuner client sync core: cached, observable projections of the remote
itinerary store and the derived state built on top of them.
"""
