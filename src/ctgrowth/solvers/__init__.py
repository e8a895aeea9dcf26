from .transition import ContinuousTimeTransition, DiscreteTransition
