"""Reserved for picture-loss-indication support; it holds no modules."""